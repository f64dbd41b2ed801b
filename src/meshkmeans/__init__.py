"""
Mesh segmentation with a generalized K-Means.

The package is split into layers:
    geometry: points, meshes and the KdTree spatial index.
    metrics: Euclidean and geodesic (Dijkstra, heat method) distances.
    clustering: kernels, centroid initialization, K selection and the K-Means loop.
"""
