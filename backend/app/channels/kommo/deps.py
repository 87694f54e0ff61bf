"""Dependencias para el webhook de Kommo."""

from app.repositories.kommo import KommoRepository, get_kommo_repository
from app.services.line import LineMessagingClient, get_line_client


def kommo_repository() -> KommoRepository:
    return get_kommo_repository()


def line_client() -> LineMessagingClient:
    return get_line_client()
