"""repo2txt: turn a repository snapshot into one LLM-ready text artifact."""

__version__ = "0.1.0"
