"""
Ventas y clientes, en modo solo lectura para la emisión de comprobantes.
"""
