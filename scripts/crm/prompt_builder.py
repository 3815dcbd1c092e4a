"""
Sales Assistant — Prompt Builder
==================================

Renders an AggregatedAnalysis into the context block that is prepended to the
user's first message of a conversation. Later turns rely on the chat history
only, so this text is built once per conversation.

Sections (each omitted when its collection is empty):
  - metrics summary
  - funnels → stages → lead counts
  - leads with stage, funnel and product lines
  - activities with status and schedule
  - closed orders
"""
from __future__ import annotations

from datetime import datetime
from typing import Dict, Iterable, List, Optional

from models.crm_models import Activity, AggregatedAnalysis, Lead, Stage

SYSTEM_PROMPT = """Você é um Assistente de Vendas Inteligente da Sankhya.

SEU PAPEL:
- Ajudar vendedores a gerenciar leads e atividades
- Sugerir próximas ações baseadas no histórico
- Analisar o pipeline de vendas focando em valores e oportunidades
- Fornecer insights sobre leads e atividades

ESTRUTURA DE DADOS DO SISTEMA:
1. FUNIL: Container de estágios de vendas
2. ESTÁGIOS: Etapas dentro de um funil (ex: Leads, Discovery, Demo, Won)
3. LEADS: Oportunidades de venda dentro de cada estágio
4. ATIVIDADES: Ações relacionadas aos leads (ligações, emails, reuniões, etc)
5. PEDIDOS: Pedidos de venda finalizados (valor total por cliente)
6. CLIENTES: Base de clientes do sistema

HIERARQUIA:
Funil → Estágios → Leads → Atividades/Produtos

VOCÊ TEM ACESSO A:
- Leads e seus estágios dentro dos funis
- Atividades registradas (com status: AGUARDANDO, ATRASADO, REALIZADO)
- Produtos dos leads (itens de interesse)
- Clientes cadastrados
- Pedidos de venda com valores totais

FOCO PRINCIPAL:
1. **Atividades**: Analise atividades pendentes, atrasadas e sugestões de follow-up
2. **Leads**: Identifique oportunidades prioritárias, leads parados, conversão entre estágios
3. **Pedidos**: Analise valores totais por cliente, ticket médio, tendências de compra
4. **Pipeline**: Entenda a distribuição de leads nos estágios e funis

COMO VOCÊ DEVE RESPONDER:
1. Seja direto e focado em ações de vendas
2. Use dados reais do sistema
3. Sugira próximos passos concretos (ligar, email, reunião)
4. Analise tendências no pipeline
5. Identifique leads e atividades que precisam de atenção

Sempre forneça informações baseadas nos dados reais disponíveis no contexto."""

MODEL_ACKNOWLEDGEMENT = (
    "Entendido! Sou seu Assistente de Vendas no Sankhya CRM. Estou pronto para "
    "analisar seus dados e ajudar você a vender mais. Como posso ajudar?"
)

CONTEXT_INSTRUCTIONS = (
    "Use os dados abaixo como fonte para esta conversa. Valores em R$, "
    "datas no formato DD/MM/AAAA."
)

NO_DATE = "Sem data"
INVALID_DATE = "Data inválida"
NO_NAME = "Sem nome"
NO_NUMBER = "s/n"
ACTIVITY_DESCRIPTION_LIMIT = 60

# Sankhya returns timestamps as "ddmmyyyy HH:MM:SS"; manual entries use slashes
_DATETIME_FORMATS = (
    "%d%m%Y %H:%M:%S",
    "%d/%m/%Y %H:%M:%S",
    "%d/%m/%Y %H:%M",
    "%d/%m/%Y",
    "%d%m%Y",
)


# ─── Formatting helpers ─────────────────────────────────────

def format_brl(value: float) -> str:
    """1500.0 -> '1.500,00'"""
    return f"{value or 0:,.2f}".replace(",", "_").replace(".", ",").replace("_", ".")


def parse_remote_datetime(text: str) -> Optional[datetime]:
    text = text.strip()
    for fmt in _DATETIME_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None


def format_activity_date(activity: Activity) -> str:
    """DATA_INICIO, or DATA_HORA when DATA_INICIO is absent, as 'DD/MM/YYYY, HH:MM'."""
    value = next((v for v in (activity.DATA_INICIO, activity.DATA_HORA) if v and v.strip()), None)
    if value is None:
        return NO_DATE
    parsed = parse_remote_datetime(value)
    if parsed is None:
        return INVALID_DATE
    return parsed.strftime("%d/%m/%Y, %H:%M")


def activity_summary(activity: Activity) -> str:
    """First '|' segment of the description, truncated."""
    desc = (activity.DESCRICAO or "").split("|")[0].strip() or (activity.DESCRICAO or "").strip()
    return (desc or "Sem descrição")[:ACTIVITY_DESCRIPTION_LIMIT]


def _stage_order(stage: Stage):
    try:
        return (0, int(stage.ORDEM))
    except (TypeError, ValueError):
        return (1, 0)


def _index(records: Iterable, attr: str) -> Dict[str, object]:
    index = {}
    for record in records:
        value = getattr(record, attr)
        if value is not None and value not in index:
            index[value] = record
    return index


# ─── Sections ───────────────────────────────────────────────

def _summary_section(analysis: AggregatedAnalysis, user_name: str) -> List[str]:
    return [
        f"👤 Usuário: {user_name}",
        "📊 Resumo Geral:",
        f"- {analysis.total_leads} leads no pipeline",
        f"- {analysis.total_atividades} atividades registradas",
        f"- {analysis.total_pedidos} pedidos fechados (R$ {format_brl(analysis.valor_total_pedidos)})",
        f"- {analysis.total_clientes} clientes",
    ]


def _funnel_section(analysis: AggregatedAnalysis) -> List[str]:
    lines = ["🎯 FUNIS E ESTÁGIOS:"]
    for funnel in analysis.funis:
        stages = sorted(
            (s for s in analysis.estagios_funis if s.CODFUNIL == funnel.CODFUNIL),
            key=_stage_order,
        )
        funnel_leads = [l for l in analysis.leads if l.CODFUNIL == funnel.CODFUNIL]
        lines.append(f"• {funnel.NOME or NO_NAME} ({len(stages)} estágios, {len(funnel_leads)} leads)")
        for stage in stages:
            count = sum(1 for l in analysis.leads if l.CODESTAGIO == stage.CODESTAGIO)
            lines.append(f"    - {stage.NOME or NO_NAME}: {count} leads")
    return lines


def _lead_block(lead: Lead, analysis: AggregatedAnalysis, stages: Dict, funnels: Dict) -> str:
    stage = stages.get(lead.CODESTAGIO)
    funnel = funnels.get(lead.CODFUNIL)
    products = [
        p.DESCRPROD for p in analysis.produtos_leads
        if p.CODLEAD == lead.CODLEAD and p.DESCRPROD
    ]
    lines = [
        f"• {lead.NOME or NO_NAME} - R$ {format_brl(lead.VALOR)}",
        f"  Status: {lead.STATUS_LEAD or 'EM_ANDAMENTO'}",
        f"  Estágio: {(stage.NOME or NO_NAME) if stage else 'Sem estágio'} "
        f"(Funil: {(funnel.NOME or NO_NAME) if funnel else 'Sem funil'})",
    ]
    if products:
        lines.append(f"  Produtos: {', '.join(products)}")
    return "\n".join(lines)


def _leads_section(analysis: AggregatedAnalysis) -> List[str]:
    stages = _index(analysis.estagios_funis, "CODESTAGIO")
    funnels = _index(analysis.funis, "CODFUNIL")
    blocks = [_lead_block(lead, analysis, stages, funnels) for lead in analysis.leads]
    return [f"💰 LEADS NO PIPELINE ({analysis.total_leads}):", "\n\n".join(blocks)]


def _activities_section(analysis: AggregatedAnalysis) -> List[str]:
    leads = _index(analysis.leads, "CODLEAD")
    blocks = []
    for activity in analysis.atividades:
        lead = leads.get(activity.CODLEAD) if activity.CODLEAD else None
        blocks.append("\n".join([
            f"• {activity_summary(activity)}",
            f"  Tipo: {activity.TIPO or ''} | Status: {activity.STATUS or 'AGUARDANDO'} "
            f"| Data: {format_activity_date(activity)}",
            f"  Lead: {lead.NOME or NO_NAME}" if lead else "  Sem lead associado",
        ]))
    return [f"📋 ATIVIDADES ({analysis.total_atividades}):", "\n\n".join(blocks)]


def _orders_section(analysis: AggregatedAnalysis) -> List[str]:
    blocks = [
        f"• Pedido {order.NUNOTA or NO_NUMBER} - {order.NOMEPARC or 'Cliente não informado'}\n"
        f"  Valor: R$ {format_brl(order.VLRNOTA)}\n"
        f"  Data: {order.DTNEG or NO_DATE}"
        for order in analysis.pedidos
    ]
    header = (
        f"💵 PEDIDOS FECHADOS ({analysis.total_pedidos} - "
        f"Total: R$ {format_brl(analysis.valor_total_pedidos)}):"
    )
    return [header, "\n\n".join(blocks)]


def build_context_prompt(analysis: AggregatedAnalysis, user_name: str, message: str) -> str:
    """Render the first-turn message: data context followed by the user's question."""
    start = analysis.filtro.data_inicio.isoformat()
    end = analysis.filtro.data_fim.isoformat()

    sections: List[List[str]] = [
        [f"CONTEXTO DO SISTEMA ({start} a {end}):", CONTEXT_INSTRUCTIONS],
        _summary_section(analysis, user_name),
    ]
    if analysis.funis:
        sections.append(_funnel_section(analysis))
    if analysis.leads:
        sections.append(_leads_section(analysis))
    if analysis.atividades:
        sections.append(_activities_section(analysis))
    if analysis.pedidos:
        sections.append(_orders_section(analysis))
    sections.append(["PERGUNTA DO USUÁRIO:", message])

    return "\n\n".join("\n".join(section) for section in sections)
