"""
Claim Verifier — decides whether "my character is class X at level Y+" is true.

Architecture: Screenshot → Variants → OCR (remote or local) → Extraction → Decision
              Lookup-bot reply → Extraction → Decision
Philosophy:  Read generously. Decide strictly.
"""

__version__ = "1.0.0"
