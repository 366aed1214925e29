import hashlib
import logging

from sqlalchemy.orm import Session

from app.common.exceptions import ArtifactNotFound, ArtifactNotReady, ComprobanteNotFound
from app.modules.comprobantes.models import Comprobante, ComprobanteArtifact, ComprobanteStatus

logger = logging.getLogger(__name__)


class ArtifactStore:
    """XML firmado de cada comprobante, indexado por id de comprobante"""

    def __init__(self, db: Session):
        self.db = db

    def put(self, comprobante: Comprobante, xml: str) -> ComprobanteArtifact:
        """Guarda (o reemplaza) el XML. No confirma la transacción."""
        if comprobante.status != ComprobanteStatus.ACCEPTED:
            raise ArtifactNotReady(comprobante_id=comprobante.id, status=comprobante.status.value)

        digest = hashlib.sha256(xml.encode("utf-8")).hexdigest()
        artifact = self.db.query(ComprobanteArtifact).filter(
            ComprobanteArtifact.comprobante_id == comprobante.id
        ).first()

        if artifact is None:
            artifact = ComprobanteArtifact(comprobante_id=comprobante.id, xml=xml, digest=digest)
            self.db.add(artifact)
        else:
            artifact.xml = xml
            artifact.digest = digest

        logger.info(f"XML de {comprobante.series_number} almacenado (sha256 {digest[:12]})")
        return artifact

    def get(self, comprobante_id: int) -> str:
        comprobante = self.db.get(Comprobante, comprobante_id)
        if comprobante is None:
            raise ComprobanteNotFound(comprobante_id=comprobante_id)

        if comprobante.status != ComprobanteStatus.ACCEPTED:
            raise ArtifactNotReady(comprobante_id=comprobante_id, status=comprobante.status.value)

        artifact = self.db.query(ComprobanteArtifact).filter(
            ComprobanteArtifact.comprobante_id == comprobante_id
        ).first()
        if artifact is None:
            raise ArtifactNotFound(comprobante_id=comprobante_id)

        return artifact.xml
