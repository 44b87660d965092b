"""SQLAlchemy models for EchoVault.

_embedding_dims is set at runtime by EchoVault.__init__() before the models are imported.
"""

_embedding_dims: int = 768
