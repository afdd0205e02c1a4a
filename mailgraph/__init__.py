"""MailGraph: knowledge graph construction and traversal over email."""

__version__ = "0.1.0"
