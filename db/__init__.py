"""Capa de persistencia: engine, sesiones y modelos."""
