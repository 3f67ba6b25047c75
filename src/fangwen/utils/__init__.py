"""Fangwen utils: Logging und kleine Hilfsfunktionen."""
