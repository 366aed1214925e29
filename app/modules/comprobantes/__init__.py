"""
Módulo de Comprobantes Electrónicos

Numeración y emisión de facturas (serie F001) y boletas (serie B001) ante SUNAT:

- SequenceAllocator: correlativo único y creciente por (tipo, serie)
- EmissionService: PENDING -> SENT -> ACCEPTED / REJECTED, con reenvío
  usando el mismo número
- LedgerQueryEngine: listado paginado con filtros combinables
- ArtifactStore: XML firmado de los comprobantes aceptados

Una tarea periódica de Celery retoma los comprobantes que quedaron sin
respuesta de SUNAT.
"""
