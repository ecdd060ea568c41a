"""Modelos y entidades del dominio.

- Estructuras de datos puras y estrictas (Pydantic v2).
- El dominio no conoce el SDK de Azure, AzCopy ni la CLI.
"""
