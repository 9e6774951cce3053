"""Embedding recommenders for MovieLens-style ratings.

Core idea:
- Map raw user/item ids to dense indices and learn an embedding per entity
- Train either pointwise (biased MF, feed-forward rating regression) or
  contrastively (user/item towers with in-batch negatives)
- Rank unrated items by score; project item embeddings to 2-D with PCA
"""
