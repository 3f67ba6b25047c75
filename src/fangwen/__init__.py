"""Fangwen · Scheduled URL Visitor.

Besucht konfigurierte Ziel-URLs auf unabhängigen, gejitterten Zeitplänen
und stellt eine authentifizierte Control-API für Status und Steuerung bereit.
"""

__version__ = "1.0.0"

USER_AGENT = f"Auto-Fangwen/{__version__} (Scheduled Visit Bot)"
