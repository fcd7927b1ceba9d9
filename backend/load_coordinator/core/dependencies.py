"""Per-application service graph and the FastAPI dependencies that hand it out."""
from __future__ import annotations

from dataclasses import dataclass

from fastapi import Request

from load_coordinator.core.config import Settings
from load_coordinator.services.audit import AuditRecorder
from load_coordinator.services.coordinator import LoadCoordinator
from load_coordinator.services.documents import DocumentService
from load_coordinator.services.importer import LoadImporter
from load_coordinator.services.load_store import LoadStore
from load_coordinator.services.visibility import LoadBoard


@dataclass
class ServiceContainer:
    settings: Settings
    store: LoadStore
    recorder: AuditRecorder
    documents: DocumentService
    coordinator: LoadCoordinator
    importer: LoadImporter
    board: LoadBoard

    @classmethod
    def build(cls, settings: Settings) -> "ServiceContainer":
        store = LoadStore(settings.resolved_database_path())
        recorder = AuditRecorder(store)
        documents = DocumentService(settings.resolved_document_dir())
        coordinator = LoadCoordinator(store, recorder, documents)
        return cls(
            settings=settings,
            store=store,
            recorder=recorder,
            documents=documents,
            coordinator=coordinator,
            importer=LoadImporter(coordinator),
            board=LoadBoard(store, limit=settings.max_listed_loads),
        )

    def close(self) -> None:
        self.board.close()
        self.store.close()


def get_services(request: Request) -> ServiceContainer:
    return request.app.state.services


def get_store(request: Request) -> LoadStore:
    return get_services(request).store


def get_coordinator(request: Request) -> LoadCoordinator:
    return get_services(request).coordinator


def get_importer(request: Request) -> LoadImporter:
    return get_services(request).importer


def get_board(request: Request) -> LoadBoard:
    return get_services(request).board


def get_app_settings(request: Request) -> Settings:
    return get_services(request).settings
