"""
Clustering: kernels, centroid initialization, K selection and the K-Means loop.
"""
