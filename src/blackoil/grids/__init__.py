"""The subpackage ``grids`` contains the grid class and constructors of
structured grids. Only the geometry the residual assembly needs is represented: cell
volumes and centroids, face areas, normals and centroids, and the face-cell
connectivity.

"""
