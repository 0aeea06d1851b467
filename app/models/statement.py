"""
Statement payload as submitted by clients to the save-results endpoint.
Every line defaults to zero so partial payloads still validate; only the
lines a client actually sent are compared against the computed statement.
"""
from decimal import Decimal

from pydantic import BaseModel


class Receitas(BaseModel):
    operacoes: Decimal = Decimal("0")
    outras: Decimal = Decimal("0")
    total: Decimal = Decimal("0")


class Custos(BaseModel):
    fator: Decimal = Decimal("0")
    adValorem: Decimal = Decimal("0")
    iof: Decimal = Decimal("0")
    tarifas: Decimal = Decimal("0")
    total: Decimal = Decimal("0")


class Despesas(BaseModel):
    operacionais: Decimal = Decimal("0")
    tributaveis: Decimal = Decimal("0")
    total: Decimal = Decimal("0")


class Impostos(BaseModel):
    pis: Decimal = Decimal("0")
    cofins: Decimal = Decimal("0")
    issqn: Decimal = Decimal("0")
    ir: Decimal = Decimal("0")
    csll: Decimal = Decimal("0")
    total: Decimal = Decimal("0")


class StatementPayload(BaseModel):
    receitas: Receitas = Receitas()
    custos: Custos = Custos()
    deducaoFiscal: Decimal = Decimal("0")
    resultadoBruto: Decimal = Decimal("0")
    despesas: Despesas = Despesas()
    resultadoOperacional: Decimal = Decimal("0")
    impostos: Impostos = Impostos()
    resultadoLiquido: Decimal = Decimal("0")
