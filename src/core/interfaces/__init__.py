"""Interfaces/abstracciones del Core.

- Contratos (Protocol) que implementan los adaptadores concretos.
- El código de SDK y subprocesos vive en `adapters/`; la CLI los conecta.
"""
