"""Sealed Sessions Meta information.
   Sealed Sessions derives per-session keys from a single master seed
   and keeps an encrypted, publicly shareable catalog of session blobs.
"""
__title__ = 'sealed_sessions'
__description__ = (
   'Deterministic session key derivation and encrypted '
   'session storage with a public index.'
)
__version__ = '0.3.0'
__license__ = 'Apache-2.0'
