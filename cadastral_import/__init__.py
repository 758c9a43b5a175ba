"""Cadastral workbook -> relational store bulk importer.

The package turns a multi-sheet cadastral workbook (Region, Departement,
Arrondissement, Lotissement, Parcelle, Batiment and their relation tables)
into entity records and loads them, sheet by sheet, in foreign-key order.
"""

__version__ = "0.1.0"
