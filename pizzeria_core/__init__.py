"""Núcleo de configuración y logging de la pizzería."""
