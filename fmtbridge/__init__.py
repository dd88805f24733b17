"""fmtbridge: a language server that formats documents with an external command."""

__version__ = "0.1.0"
