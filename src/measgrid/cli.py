"""Command-line interface for measgrid projects."""

from __future__ import annotations

import json
import math
from pathlib import Path

import click

from measgrid import __version__


@click.group()
@click.version_option(version=__version__, prog_name="measgrid")
def main() -> None:
    """measgrid -- measurement grid with worst-case uncertainty propagation.

    A project directory holds measgrid.yaml and the grid document.
    """


# ---------------------------------------------------------------------------
# helpers
# ---------------------------------------------------------------------------


def _open(directory: str):
    """Load config and document of the project at *directory*."""
    from measgrid.logging import set_project_dir
    from measgrid.project import ConfigError, document_path, load_project_config
    from measgrid.storage import StorageError, load_document

    project_dir = Path(directory)
    try:
        config = load_project_config(project_dir)
    except ConfigError as e:
        raise click.ClickException(str(e))

    set_project_dir(project_dir)
    try:
        document = load_document(document_path(project_dir, config), config)
    except StorageError as e:
        raise click.ClickException(str(e))
    return project_dir, config, document


def _save(project_dir: Path, config, document) -> None:
    from measgrid.project import document_path
    from measgrid.storage import save_document

    save_document(document, document_path(project_dir, config))


def _resolve_column(document, column: str) -> int:
    """Accept a column name or a 0-based index; a matching name wins."""
    try:
        return document.columns.index_of(column)
    except KeyError:
        pass
    if column.isdigit():
        index = int(column)
        if index >= len(document.columns):
            raise click.ClickException(f"No column at index {index}")
        return index
    raise click.ClickException(
        f"Unknown column {column!r}. Available: {document.columns.names()}"
    )


def _json_number(value: float) -> float | None:
    return None if math.isnan(value) else value


# ---------------------------------------------------------------------------
# New
# ---------------------------------------------------------------------------


@main.command()
@click.argument("directory", type=click.Path())
def new(directory: str) -> None:
    """Scaffold a new project at DIRECTORY with columns y and x."""
    from measgrid.project import ConfigError, scaffold_project

    try:
        result = scaffold_project(Path(directory))
    except (FileExistsError, ConfigError) as e:
        raise click.ClickException(str(e))
    click.echo(f"Created project at {result}")


# ---------------------------------------------------------------------------
# Show
# ---------------------------------------------------------------------------


@main.command()
@click.argument("directory", type=click.Path(exists=True))
@click.option("--json", "as_json", is_flag=True, help="Output as JSON.")
def show(directory: str, as_json: bool) -> None:
    """Print the grid of DIRECTORY with values and uncertainties."""
    from measgrid.views import cell_view, row_labels

    _, _, document = _open(directory)
    labels = row_labels(document)

    if as_json:
        out = {
            "columns": [
                {"name": c.name, "formula": c.formula, "precision": c.precision}
                for c in document.columns
            ],
            "rows": [
                [
                    {
                        "value": _json_number(cell.value),
                        "uncertainty": _json_number(cell.uncertainty),
                        "raw_value": cell.raw_value,
                        "raw_uncertainty": cell.raw_uncertainty,
                    }
                    for cell in row
                ]
                for row in document.data_rows
            ],
        }
        click.echo(json.dumps(out, indent=2))
        return

    header = ["i"]
    for column in document.columns:
        header.extend([column.name, f"Δ{column.name}"])
    click.echo("  ".join(f"{h:>12s}" for h in header))
    for r, label in enumerate(labels):
        fields = [label]
        for c in range(len(document.columns)):
            view = cell_view(document, r, c)
            fields.extend([view.format_value(), view.format_uncertainty()])
        click.echo("  ".join(f"{f:>12s}" for f in fields))
    if not labels:
        click.echo("No rows.")


# ---------------------------------------------------------------------------
# Cell edits
# ---------------------------------------------------------------------------


@main.command("set")
@click.argument("directory", type=click.Path(exists=True))
@click.argument("row", type=click.IntRange(min=1))
@click.argument("column")
@click.argument("value")
@click.option("--uncertainty", "-u", default=None, help="Uncertainty text for the cell.")
def set_cell(directory: str, row: int, column: str, value: str, uncertainty: str | None) -> None:
    """Set the value of input COLUMN on 1-based ROW of DIRECTORY.

    ROW may be one past the last data row to fill the blank row.
    """
    project_dir, config, document = _open(directory)
    index = _resolve_column(document, column)
    if row > len(document.rows):
        raise click.ClickException(f"Row {row} is past the blank row ({len(document.rows)})")
    if document.columns[index].is_derived:
        raise click.ClickException(f"Column {document.columns[index].name!r} is computed")

    document.set_raw_cell(row - 1, index, value, uncertainty)
    _save(project_dir, config, document)
    click.echo(f"Set row {row}, column {document.columns[index].name!r}")


# ---------------------------------------------------------------------------
# Column
# ---------------------------------------------------------------------------


@main.group()
def column() -> None:
    """Column management commands."""


@column.command("add")
@click.argument("directory", type=click.Path(exists=True))
@click.argument("name")
@click.option("--formula", default=None, help="Formula computing the column.")
@click.option("--precision", default=None, type=int, help="Displayed decimal places.")
def column_add(directory: str, name: str, formula: str | None, precision: int | None) -> None:
    """Append a column called NAME to DIRECTORY."""
    project_dir, config, document = _open(directory)
    index = document.add_column(name)
    if formula is not None:
        document.set_formula(index, formula)
        error = document.check_formula(index)
        if error is not None:
            click.echo(f"Warning: {error}", err=True)
    if precision is not None:
        document.set_precision(index, precision)
    _save(project_dir, config, document)
    click.echo(f"Added column {document.columns[index].name!r} at index {index}")


@column.command("remove")
@click.argument("directory", type=click.Path(exists=True))
@click.argument("column")
def column_remove(directory: str, column: str) -> None:
    """Remove COLUMN (name or index) from DIRECTORY."""
    project_dir, config, document = _open(directory)
    index = _resolve_column(document, column)
    name = document.columns[index].name
    if not document.remove_column(index):
        raise click.ClickException(f"Column {name!r} cannot be removed")
    _save(project_dir, config, document)
    click.echo(f"Removed column {name!r}")


@column.command("formula")
@click.argument("directory", type=click.Path(exists=True))
@click.argument("column")
@click.argument("formula")
def column_formula(directory: str, column: str, formula: str) -> None:
    """Set the FORMULA of COLUMN; an empty string makes it an input column."""
    project_dir, config, document = _open(directory)
    index = _resolve_column(document, column)
    document.set_formula(index, formula)
    error = document.check_formula(index)
    if error is not None:
        click.echo(f"Warning: {error}", err=True)
    _save(project_dir, config, document)
    click.echo(f"Formula of {document.columns[index].name!r} set")


@column.command("rename")
@click.argument("directory", type=click.Path(exists=True))
@click.argument("column")
@click.argument("name")
def column_rename(directory: str, column: str, name: str) -> None:
    """Rename COLUMN to NAME."""
    project_dir, config, document = _open(directory)
    index = _resolve_column(document, column)
    if not document.rename_column(index, name):
        raise click.ClickException(f"Column {document.columns[index].name!r} cannot be renamed to {name!r}")
    _save(project_dir, config, document)
    click.echo(f"Renamed column to {name!r}")


@column.command("precision")
@click.argument("directory", type=click.Path(exists=True))
@click.argument("column")
@click.argument("precision", type=int)
def column_precision(directory: str, column: str, precision: int) -> None:
    """Set the displayed decimal places of COLUMN."""
    project_dir, config, document = _open(directory)
    index = _resolve_column(document, column)
    document.set_precision(index, precision)
    _save(project_dir, config, document)
    click.echo(f"Precision of {document.columns[index].name!r} is {document.columns[index].precision}")


# ---------------------------------------------------------------------------
# Recompute / export
# ---------------------------------------------------------------------------


@main.command()
@click.argument("directory", type=click.Path(exists=True))
def recompute(directory: str) -> None:
    """Reparse and recompute every row of DIRECTORY."""
    project_dir, config, document = _open(directory)
    document.reparse_and_recompute_all()
    _save(project_dir, config, document)
    click.echo(f"Recomputed {len(document.data_rows)} row(s)")


@main.command()
@click.argument("directory", type=click.Path(exists=True))
@click.argument("output", type=click.Path())
def export(directory: str, output: str) -> None:
    """Export values and uncertainties of DIRECTORY to CSV file OUTPUT."""
    from measgrid.views import to_frame

    _, _, document = _open(directory)
    frame = to_frame(document)
    frame.write_csv(output)
    click.echo(f"Exported {frame.height} row(s) to {output}")
