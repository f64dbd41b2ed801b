"""
The GEOMETRY layer holds the point model, the triangle mesh and the KdTree.
It knows nothing about clustering.
"""
