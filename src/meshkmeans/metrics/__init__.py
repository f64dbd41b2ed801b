"""
Distance metrics. Each metric is bound to a point set (or a mesh) and performs
one assign-then-update iteration of the K-Means loop.
"""
from meshkmeans.metrics.metric import Metric, IterationResult
from meshkmeans.metrics.euclidean import EuclideanMetric
from meshkmeans.metrics.geodesic import GeodesicMetric
from meshkmeans.metrics.heat import GeodesicHeatMetric
