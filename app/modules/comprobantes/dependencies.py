"""
Dependencias del módulo de Comprobantes

Cada servicio se construye sobre la sesión del request, de modo que la
emisión, las consultas y la descarga del XML comparten la misma transacción.
"""

from app.dependencies.dbDependecies import db_dependency
from app.modules.comprobantes.artifacts import ArtifactStore
from app.modules.comprobantes.emission import EmissionService
from app.modules.comprobantes.ledger import LedgerQueryEngine
from app.modules.comprobantes.sequence import SequenceAllocator


def get_emission_service(db: db_dependency) -> EmissionService:
    """El gateway de SUNAT se toma de la configuración (get_gateway)"""
    return EmissionService(db)


def get_ledger(db: db_dependency) -> LedgerQueryEngine:
    return LedgerQueryEngine(db)


def get_artifact_store(db: db_dependency) -> ArtifactStore:
    return ArtifactStore(db)


def get_allocator(db: db_dependency) -> SequenceAllocator:
    return SequenceAllocator(db)
