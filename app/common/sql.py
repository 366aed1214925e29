"""
Construcciones SQL portables usadas por los modelos del ledger.
"""
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.sql.expression import FunctionElement
from sqlalchemy.types import String

CORRELATIVO_WIDTH = 8


class zero_pad(FunctionElement):
    """Correlativo relleno con ceros a CORRELATIVO_WIDTH dígitos (LPAD)."""

    type = String()
    name = "zero_pad"
    inherit_cache = True


@compiles(zero_pad)
def _zero_pad_default(element, compiler, **kw):
    return "LPAD(CAST(%s AS VARCHAR(20)), %d, '0')" % (
        compiler.process(element.clauses, **kw),
        CORRELATIVO_WIDTH,
    )


@compiles(zero_pad, "mysql")
def _zero_pad_mysql(element, compiler, **kw):
    return "LPAD(%s, %d, '0')" % (compiler.process(element.clauses, **kw), CORRELATIVO_WIDTH)


@compiles(zero_pad, "sqlite")
def _zero_pad_sqlite(element, compiler, **kw):
    return "printf('%%0%dd', %s)" % (CORRELATIVO_WIDTH, compiler.process(element.clauses, **kw))


def format_correlativo(number: int) -> str:
    return f"{number:0{CORRELATIVO_WIDTH}d}"


def like_pattern(term: str, escape: str = "/") -> str:
    """Patrón '%term%' con los comodines de LIKE escapados"""
    escaped = term.replace(escape, escape * 2).replace("%", escape + "%").replace("_", escape + "_")
    return f"%{escaped}%"
