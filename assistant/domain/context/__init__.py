# This module handles Context engineering

#  +---------------------+
# |      Memory         |   (Persistent, user-owned, external store)
# |---------------------|
# | Artifacts           |
# | Entries             |
# | Embeddings          |
# +---------------------+
#         |
#         v
# +---------------------+
# |      Scoring        |   (Per message, deterministic)
# |---------------------|
# | Keywords + bigrams  |
# | Embedding cosine    |
# | Lexical fallback    |
# +---------------------+
#         |
#         v
# +------------------------------+
# |           Context            |   (Thresholded, ranked, budgeted)
# |------------------------------|
# | Manual overrides first       |
# | Top N above min confidence   |
# | Title, summary, recent notes |
# +------------------------------+
#         |
#         v
#   [agent runtime / tool calls]
