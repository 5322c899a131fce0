"""zhankai: export a repository as one markdown document and query an assistant with it."""

__version__ = "0.1.0"
