"""
Sankhya loadRecords Query Builders
===================================

One function per query shape issued by the analysis aggregator. Filter
expressions are assembled only here, from typed arguments (dates, ints),
so no free-form text from a caller ever reaches a criteria string.

Payload shape:
    {"requestBody": {"dataSet": {
        "rootEntity": ..., "includePresentationFields": "S" | "N",
        "offsetPage": None, "disableRowsLimit": True,
        "entity": {"fieldset": {"list": "F1, F2, ..."}},
        "criteria": {"expression": {"$": "<filter>"}}}}}
"""
from datetime import date
from typing import Any, Dict, Iterable, List, Optional, Sequence

LEAD_FIELDS = [
    "CODLEAD", "NOME", "DESCRICAO", "VALOR", "CODESTAGIO", "DATA_VENCIMENTO",
    "TIPO_TAG", "COR_TAG", "CODPARC", "CODFUNIL", "CODUSUARIO", "ATIVO",
    "DATA_CRIACAO", "DATA_ATUALIZACAO", "STATUS_LEAD", "MOTIVO_PERDA",
    "DATA_CONCLUSAO",
]
ACTIVITY_FIELDS = [
    "CODATIVIDADE", "CODLEAD", "TIPO", "DESCRICAO", "DATA_HORA", "DATA_INICIO",
    "DATA_FIM", "CODUSUARIO", "DADOS_COMPLEMENTARES", "COR", "ORDEM", "ATIVO",
    "STATUS",
]
FUNNEL_FIELDS = ["CODFUNIL", "NOME", "DESCRICAO", "COR", "ATIVO", "DATA_CRIACAO", "DATA_ATUALIZACAO"]
STAGE_FIELDS = ["CODESTAGIO", "CODFUNIL", "NOME", "ORDEM", "COR", "ATIVO"]
ORDER_FIELDS = ["NUNOTA", "CODPARC", "NOMEPARC", "DTNEG", "VLRNOTA", "CODVEND", "OBSERVACAO"]
PRODUCT_FIELDS = ["CODPROD", "DESCRPROD", "ATIVO"]
CUSTOMER_FIELDS = ["CODPARC", "NOMEPARC", "CGC_CPF", "CLIENTE", "ATIVO"]
LEAD_PRODUCT_FIELDS = [
    "CODITEM", "CODLEAD", "CODPROD", "DESCRPROD", "QUANTIDADE", "VLRUNIT",
    "VLRTOTAL", "ATIVO", "DATA_INCLUSAO",
]

# Sales orders only
ORDER_MOVEMENT_TYPE = "P"


def sankhya_date(value: date) -> str:
    """Render a calendar date as the remote literal DD/MM/YYYY."""
    return value.strftime("%d/%m/%Y")


def load_records_payload(
    root_entity: str,
    fields: Sequence[str],
    expression: str,
    include_presentation: bool = True,
) -> Dict[str, Any]:
    """Build the nested loadRecords request body."""
    return {
        "requestBody": {
            "dataSet": {
                "rootEntity": root_entity,
                "includePresentationFields": "S" if include_presentation else "N",
                "offsetPage": None,
                "disableRowsLimit": True,
                "entity": {"fieldset": {"list": ", ".join(fields)}},
                "criteria": {"expression": {"$": expression}},
            }
        }
    }


def leads_query(start: date, end: date, user_id: int, is_admin: bool) -> Dict[str, Any]:
    """Active leads created within the range; non-admins only see their own."""
    expression = (
        f"DATA_CRIACAO BETWEEN '{sankhya_date(start)}' AND '{sankhya_date(end)}' "
        f"AND ATIVO = 'S'"
    )
    if not is_admin:
        expression += f" AND CODUSUARIO = {int(user_id)}"
    return load_records_payload("AD_LEADS", LEAD_FIELDS, expression)


def activities_query(start: date, end: date) -> Dict[str, Any]:
    """Active activities scheduled within the range, or not scheduled at all."""
    expression = (
        f"ATIVO = 'S' AND (DATA_HORA BETWEEN '{sankhya_date(start)}' "
        f"AND '{sankhya_date(end)}' OR DATA_HORA IS NULL)"
    )
    return load_records_payload("AD_ADLEADSATIVIDADES", ACTIVITY_FIELDS, expression)


def funnels_query() -> Dict[str, Any]:
    return load_records_payload("AD_FUNIS", FUNNEL_FIELDS, "ATIVO = 'S'")


def stages_query() -> Dict[str, Any]:
    return load_records_payload("AD_FUNISESTAGIOS", STAGE_FIELDS, "ATIVO = 'S'")


def orders_query(start: date, end: date) -> Dict[str, Any]:
    """Sales orders negotiated within the range (typed date comparison)."""
    expression = (
        f"TIPMOV = '{ORDER_MOVEMENT_TYPE}' AND DTNEG BETWEEN "
        f"TO_DATE('{sankhya_date(start)}', 'DD/MM/YYYY') AND "
        f"TO_DATE('{sankhya_date(end)}', 'DD/MM/YYYY')"
    )
    return load_records_payload("CabecalhoNota", ORDER_FIELDS, expression, include_presentation=False)


def products_query() -> Dict[str, Any]:
    return load_records_payload("Produto", PRODUCT_FIELDS, "ATIVO = 'S'", include_presentation=False)


def customers_query() -> Dict[str, Any]:
    return load_records_payload(
        "Parceiro", CUSTOMER_FIELDS, "CLIENTE = 'S' AND ATIVO = 'S'", include_presentation=False,
    )


def numeric_lead_ids(lead_ids: Iterable[Optional[str]]) -> List[int]:
    """Keep only ids that are plain integers, in order, without duplicates."""
    ids: List[int] = []
    for raw in lead_ids:
        if raw is None:
            continue
        text = str(raw).strip()
        if not (text.isascii() and text.isdigit()):
            continue
        value = int(text)
        if value not in ids:
            ids.append(value)
    return ids


def lead_products_query(lead_ids: Sequence[int]) -> Dict[str, Any]:
    """Active product lines attached to the given leads."""
    joined = ",".join(str(int(i)) for i in lead_ids)
    expression = f"CODLEAD IN ({joined}) AND ATIVO = 'S'"
    return load_records_payload("AD_ADLEADSPRODUTOS", LEAD_PRODUCT_FIELDS, expression)
