from __future__ import annotations

from typing import Dict, List, Tuple

# Sections created with every new list, in display order.
DEFAULT_CATEGORIES: Tuple[str, ...] = (
    "Mercearia",
    "Bebidas",
    "Laticínios",
    "Açougue",
    "Padaria",
    "Hortifruti",
    "Descartáveis e Papelaria",
    "Higiene e Limpeza",
    "Extra",
)

# The one default section flagged as user-owned.
CUSTOM_CATEGORY = "Extra"

# Sort position for freshly added items; effectively "append".
APPEND_SORT_ORDER = 999

MONTH_NAMES: Tuple[str, ...] = (
    "Janeiro",
    "Fevereiro",
    "Março",
    "Abril",
    "Maio",
    "Junho",
    "Julho",
    "Agosto",
    "Setembro",
    "Outubro",
    "Novembro",
    "Dezembro",
)

# Starter items for the monthly default list: category -> [(name, quantity)].
INITIAL_ITEMS: Dict[str, List[Tuple[str, int]]] = {
    "Mercearia": [
        ("Ovos (cartela com 20 unidades)", 7),
        ("Arroz 5kg", 1),
        ("Feijão 1kg", 2),
        ("Tapioca 1kg", 2),
        ("Óleo", 1),
        ("Sal", 1),
        ("Farinha de trigo", 1),
        ("Ketchup", 1),
        ("Fermento para bolos", 1),
        ("Cacau em pó 35%", 1),
        ("Açúcar", 1),
        ("Sacos de pipoca", 1),
        ("Pipoca", 1),
        ("Papel manteiga", 1),
        ("Margarina 1kg", 1),
        ("Chocolate meio amargo 1kg", 1),
        ("Nutella (tamanho médio)", 1),
    ],
    "Descartáveis e Papelaria": [
        ("Pratos descartáveis", 2),
        ("Copos descartáveis", 1),
        ("Papel toalha", 1),
        ("Guardanapo", 1),
    ],
    "Laticínios": [
        ("Leite semidesnatado", 3),
        ("Requeijão light", 2),
        ("Ricota light", 2),
    ],
    "Hortifruti": [
        ("Uva", 1),
    ],
    "Higiene e Limpeza": [
        ("Cândida 2L", 1),
        ("Pato para privada", 1),
        ("Pedras para caixa acoplada", 1),
        ("Lysoform suave", 1),
        ("Detergente", 2),
        ("Shampoo e condicionador", 1),
        ("Refil de sabonete corporal", 1),
        ("Refil de sabonete íntimo", 1),
        ("Pasta de dente para sensibilidade", 1),
        ("Sabão líquido 1L", 1),
        ("Amaciante 500ml", 1),
        ("Álcool", 1),
        ("Listerine", 1),
    ],
}


def month_name(month: int) -> str:
    if 1 <= month <= 12:
        return MONTH_NAMES[month - 1]
    return ""


def default_list_name(month: int, year: int) -> str:
    return f"Lista de {month_name(month)} {year}"
