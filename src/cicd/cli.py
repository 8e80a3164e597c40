"""CLI entry point for the CICD comparison engine."""
import dataclasses
import functools
import json
import locale
import logging
from pathlib import Path
from typing import Optional

import click

from .engine import compare_loaded, compare_with_store, resolve_standard
from .errors import CicdError, MissingBaselineFile
from .details import difference_matrix, item_details, sample_details
from .display import bindings_table, history_table, show, standards_table
from .persistence import RunStore, atomic_write_text
from .settings import EngineSettings, load_settings
from .standards import StandardStore
from .table import read_table

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
APP_NAME = "cicd"


def handle_errors(func):
    """Turn engine errors into click errors (message + exit code 1)."""
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except (CicdError, FileExistsError) as e:
            logger.debug("Command failed", exc_info=True)
            raise click.ClickException(str(e)) from e
    return wrapper


def get_settings(ctx: click.Context) -> EngineSettings:
    return ctx.find_root().obj["settings"]


def open_store(ctx: click.Context, config: Optional[str]) -> StandardStore:
    """Standards store at --config, else the configured file in the working or user config directory."""
    if config:
        return StandardStore(Path(config))
    return StandardStore.from_dirs(Path.cwd(), click.get_app_dir(APP_NAME), get_settings(ctx).standards_file)


def config_option(func):
    return click.option('--config', '-c', type=click.Path(dir_okay=False), default=None,
                        help='Acceptance standards JSON file')(func)


def use_system_locale():
    """Let numeric parsing fall back to the station's decimal separator."""
    try:
        locale.setlocale(locale.LC_NUMERIC, "")
    except locale.Error as e:
        logger.warning(f"Cannot apply system locale, numbers parse in the invariant form only: {e}")


def echo_header(title: str):
    click.echo(f"\n{'='*60}")
    click.echo(title)
    click.echo(f"{'='*60}")


@click.group()
@click.option('--verbose', '-v', is_flag=True, default=False, help='Enable debug logging')
@click.option('--settings', 'settings_path', type=click.Path(exists=True, dir_okay=False), default=None,
              help='YAML file overriding the packaged engine settings')
@click.pass_context
def cli(ctx: click.Context, verbose: bool, settings_path: Optional[str]):
    """CICD acceptance comparison - compare inspection runs against a reference run."""
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, format=LOG_FORMAT)
    use_system_locale()
    ctx.ensure_object(dict)
    ctx.obj["settings"] = load_settings(settings_path)


@cli.command()
@click.argument('reference', type=click.Path(dir_okay=False))
@click.argument('test', type=click.Path(dir_okay=False))
@click.option('--standard', '-s', default=None, help='Standard name (default: the one bound to --template)')
@click.option('--template', '-t', 'template_name', default='', help='Template (scope key) the run belongs to')
@config_option
@click.option('--output', '-o', type=click.Path(dir_okay=False), default=None, help='Write the report text here')
@click.option('--json-output', type=click.Path(dir_okay=False), default=None, help='Write the report JSON here')
@click.pass_context
@handle_errors
def compare(ctx: click.Context, reference: str, test: str, standard: Optional[str], template_name: str,
            config: Optional[str], output: Optional[str], json_output: Optional[str]):
    """
    Compare a TEST table against a REFERENCE table.

    Exits with status 0 on PASS and 1 on FAIL.

    Example:
        cicd compare reference.csv 20240101_120000.csv --template board-a
    """
    outcome = compare_with_store(
        reference, test, open_store(ctx, config),
        standard_name=standard, template_name=template_name, settings=get_settings(ctx),
    )
    click.echo(outcome.text, nl=False)

    if output:
        atomic_write_text(output, outcome.text)
        click.echo(f"\nReport saved to: {output}")
    if json_output:
        atomic_write_text(json_output, json.dumps(outcome.report.to_dict(), indent=2, ensure_ascii=False))
        click.echo(f"Report JSON saved to: {json_output}")

    if not outcome.passed:
        raise SystemExit(1)


@cli.command('save-reference')
@click.argument('root', type=click.Path(file_okay=False))
@click.argument('template_name')
@click.argument('image_set')
@click.argument('table', type=click.Path(exists=True, dir_okay=False))
@click.option('--overwrite', is_flag=True, default=False, help='Replace an existing reference')
@click.pass_context
@handle_errors
def save_reference(ctx: click.Context, root: str, template_name: str, image_set: str, table: str, overwrite: bool):
    """Store TABLE as the reference of IMAGE_SET under ROOT/TEMPLATE_NAME."""
    settings = get_settings(ctx)
    store = RunStore(Path(root), settings)
    path = store.save_reference(template_name, image_set, read_table(table, settings), overwrite=overwrite)
    click.echo(f"Reference saved to: {path}")


@cli.command('image-sets')
@click.argument('root', type=click.Path(file_okay=False))
@click.argument('template_name')
@click.pass_context
def image_sets(ctx: click.Context, root: str, template_name: str):
    """List image sets of TEMPLATE_NAME that have a reference."""
    store = RunStore(Path(root), get_settings(ctx))
    names = store.list_image_sets(template_name)
    if not names:
        click.echo(f"No image sets found for {template_name}")
        return
    for name in names:
        click.echo(name)


@cli.command('run-compare')
@click.argument('root', type=click.Path(file_okay=False))
@click.argument('template_name')
@click.argument('image_set')
@click.argument('test_table', type=click.Path(exists=True, dir_okay=False))
@click.option('--standard', '-s', default=None, help='Standard name (default: the one bound to the template)')
@config_option
@click.pass_context
@handle_errors
def run_compare(ctx: click.Context, root: str, template_name: str, image_set: str, test_table: str,
                standard: Optional[str], config: Optional[str]):
    """
    Store TEST_TABLE as a new test run of IMAGE_SET and compare it with the reference.

    Writes the run table, the report text and JSON, and appends to history.
    Exits with status 1 when the comparison fails.
    """
    settings = get_settings(ctx)
    store = RunStore(Path(root), settings)
    reference_path = store.reference_path(template_name, image_set)
    if not reference_path.is_file():
        raise MissingBaselineFile(reference_path)
    chosen = resolve_standard(open_store(ctx, config), standard, template_name)
    reference = read_table(reference_path, settings)
    test = read_table(test_table, settings)

    # Nothing is stored until the comparison has succeeded
    run_id = store.new_run_id(template_name, image_set)
    test = dataclasses.replace(test, source=store.test_table_path(template_name, image_set, run_id))
    outcome = compare_loaded(reference, test, chosen, settings, template_name)

    store.save_test_table(template_name, image_set, test, run_id)
    stored = store.save_test_run(template_name, image_set, run_id, outcome.report, outcome.text)

    click.echo(outcome.text, nl=False)
    click.echo(f"\nTest table: {stored.table_path}")
    click.echo(f"Report:     {stored.report_path}")

    if not outcome.passed:
        raise SystemExit(1)


@cli.command()
@click.argument('root', type=click.Path(file_okay=False))
@click.argument('template_name')
@click.argument('image_set')
@click.pass_context
@handle_errors
def history(ctx: click.Context, root: str, template_name: str, image_set: str):
    """Show comparison history of IMAGE_SET."""
    store = RunStore(Path(root), get_settings(ctx))
    entries = store.get_history(template_name, image_set)
    if not entries:
        click.echo(f"No history found for {template_name}/{image_set}")
        return

    show(history_table(f"History: {template_name}/{image_set}", entries))


# Detail views

@cli.group()
def details():
    """Inspect differences sample by sample, item by item or as a matrix."""


def _load_pair(ctx: click.Context, reference: str, test: str, standard: Optional[str], template_name: str,
               config: Optional[str]):
    settings = get_settings(ctx)
    store = open_store(ctx, config)
    chosen = resolve_standard(store, standard, template_name)
    return read_table(reference, settings), read_table(test, settings), chosen, settings


def detail_options(func):
    func = config_option(func)
    func = click.option('--template', '-t', 'template_name', default='', help='Template (scope key)')(func)
    func = click.option('--standard', '-s', default=None, help='Standard name')(func)
    return func


@details.command('sample')
@click.argument('reference', type=click.Path(exists=True, dir_okay=False))
@click.argument('test', type=click.Path(exists=True, dir_okay=False))
@click.argument('key')
@detail_options
@click.option('--only-mismatch', is_flag=True, default=False, help='Show mismatching lines only')
@click.pass_context
@handle_errors
def details_sample(ctx: click.Context, reference: str, test: str, key: str, standard: Optional[str],
                   template_name: str, config: Optional[str], only_mismatch: bool):
    """Compare one sample KEY (group#sample) across both tables."""
    reference_table, test_table, chosen, settings = _load_pair(ctx, reference, test, standard, template_name, config)
    rows = sample_details(key, reference_table, test_table, chosen, ignored_items=settings.ignored_set())
    if not rows:
        raise click.ClickException(f"Sample not found in either table: {key}")

    echo_header(f"Sample {key} (standard: {chosen.name})")
    for row in rows:
        if only_mismatch and not row.is_mismatch:
            continue
        marker = "!" if row.is_mismatch else " "
        line = f"{marker} {row.item_name}: reference={row.reference_value} test={row.test_value}"
        if row.diff:
            line += f" diff={row.diff} threshold={row.threshold}"
        if row.reason:
            line += f" [{row.reason}]"
        click.echo(line)


@details.command('item')
@click.argument('reference', type=click.Path(exists=True, dir_okay=False))
@click.argument('test', type=click.Path(exists=True, dir_okay=False))
@click.argument('item_name')
@detail_options
@click.option('--only-mismatch', is_flag=True, default=False, help='Show mismatching samples only')
@click.pass_context
@handle_errors
def details_item(ctx: click.Context, reference: str, test: str, item_name: str, standard: Optional[str],
                 template_name: str, config: Optional[str], only_mismatch: bool):
    """Compare one ITEM_NAME across every sample."""
    reference_table, test_table, chosen, _ = _load_pair(ctx, reference, test, standard, template_name, config)
    rows = item_details(item_name, reference_table, test_table, chosen)

    echo_header(f"Item {item_name} (standard: {chosen.name})")
    for row in rows:
        if only_mismatch and not row.is_mismatch:
            continue
        marker = "!" if row.is_mismatch else " "
        line = (f"{marker} {row.key}: {row.reference_result}/{row.test_result} "
                f"reference={row.reference_value} test={row.test_value}")
        if row.diff:
            line += f" diff={row.diff} threshold={row.threshold}"
        if row.reason:
            line += f" [{row.reason}]"
        click.echo(line)


@details.command('matrix')
@click.argument('reference', type=click.Path(exists=True, dir_okay=False))
@click.argument('test', type=click.Path(exists=True, dir_okay=False))
@detail_options
@click.option('--only-mismatch', is_flag=True, default=False, help='Show mismatching samples only')
@click.pass_context
@handle_errors
def details_matrix(ctx: click.Context, reference: str, test: str, standard: Optional[str],
                   template_name: str, config: Optional[str], only_mismatch: bool):
    """Print test-minus-reference deltas for every sample and item (CSV)."""
    reference_table, test_table, chosen, settings = _load_pair(ctx, reference, test, standard, template_name, config)
    matrix = difference_matrix(reference_table, test_table, chosen, settings.ignored_set())

    click.echo(",".join(["key", "status"] + matrix.item_names))
    for row in matrix.rows:
        if only_mismatch and not row.has_mismatch:
            continue
        cells = [row.cells[name].display for name in matrix.item_names]
        click.echo(",".join([row.key, row.status] + cells))


# Acceptance standards

@cli.group()
@config_option
@click.pass_context
def standards(ctx: click.Context, config: Optional[str]):
    """Manage acceptance standards and template bindings."""
    ctx.obj["store"] = open_store(ctx, config)


def _store(ctx: click.Context) -> StandardStore:
    return ctx.obj["store"]


@standards.command('list')
@click.pass_context
@handle_errors
def standards_list(ctx: click.Context):
    """List standards with their allowances and tolerances."""
    store = _store(ctx)
    show(standards_table(f"Acceptance standards ({store.path})", store.list_standards()))
    if store.config.templates:
        show(bindings_table(store.config.templates))


@standards.command('show')
@click.argument('name')
@click.pass_context
@handle_errors
def standards_show(ctx: click.Context, name: str):
    """Print one standard as JSON."""
    click.echo(json.dumps(_store(ctx).get(name).model_dump(mode="json"), indent=2, ensure_ascii=False))


@standards.command('create')
@click.argument('base_name', default='standard')
@click.pass_context
@handle_errors
def standards_create(ctx: click.Context, base_name: str):
    """Create a standard named BASE_NAME (suffixed when taken)."""
    standard = _store(ctx).create(base_name)
    click.echo(f"Created standard: {standard.name}")


@standards.command('copy')
@click.argument('name')
@click.option('--as', 'new_name', default=None, help='Name of the copy (suffixed when taken)')
@click.pass_context
@handle_errors
def standards_copy(ctx: click.Context, name: str, new_name: Optional[str]):
    """Duplicate standard NAME."""
    standard = _store(ctx).copy(name, new_name)
    click.echo(f"Created standard: {standard.name}")


@standards.command('rename')
@click.argument('old_name')
@click.argument('new_name')
@click.pass_context
@handle_errors
def standards_rename(ctx: click.Context, old_name: str, new_name: str):
    """Rename a standard; bound templates follow the new name."""
    standard = _store(ctx).rename(old_name, new_name)
    click.echo(f"Renamed {old_name} -> {standard.name}")


@standards.command('delete')
@click.argument('name')
@click.pass_context
@handle_errors
def standards_delete(ctx: click.Context, name: str):
    """Delete a standard; bound templates fall back to the default standard."""
    _store(ctx).delete(name)
    click.echo(f"Deleted standard: {name}")


@standards.command('bind')
@click.argument('template_name')
@click.argument('name')
@click.pass_context
@handle_errors
def standards_bind(ctx: click.Context, template_name: str, name: str):
    """Bind TEMPLATE_NAME to standard NAME."""
    _store(ctx).bind(template_name, name)
    click.echo(f"Bound {template_name} -> {name}")


@standards.command('set-default-tolerance')
@click.argument('name')
@click.argument('tolerance_abs', type=float)
@click.argument('tolerance_ratio', type=float)
@click.pass_context
@handle_errors
def standards_set_default_tolerance(ctx: click.Context, name: str, tolerance_abs: float, tolerance_ratio: float):
    """Set the default absolute and proportional tolerance of NAME."""
    standard = _store(ctx).set_default_tolerance(name, tolerance_abs, tolerance_ratio)
    click.echo(f"{standard.name}: abs={standard.default_tolerance_abs:g} ratio={standard.default_tolerance_ratio:g}")


@standards.command('set-allowance')
@click.argument('name')
@click.option('--ok-ng', type=int, default=None, help='Allowed OK/NG mismatches')
@click.option('--defect-type', type=int, default=None, help='Allowed defect type mismatches')
@click.option('--extent', type=int, default=None, help='Allowed extent mismatches')
@click.pass_context
@handle_errors
def standards_set_allowance(ctx: click.Context, name: str, ok_ng: Optional[int], defect_type: Optional[int],
                            extent: Optional[int]):
    """Set allowed mismatch counts of NAME."""
    standard = _store(ctx).set_allowance(name, ok_ng=ok_ng, defect_type=defect_type, extent=extent)
    click.echo(
        f"{standard.name}: ok_ng={standard.allowed_ok_ng_mismatch} "
        f"defect_type={standard.allowed_defect_type_mismatch} extent={standard.allowed_extent_mismatch}"
    )


@standards.command('set-item-tolerance')
@click.argument('name')
@click.argument('item_name')
@click.argument('tolerance_abs', type=float)
@click.argument('tolerance_ratio', type=float, default=0.0)
@click.pass_context
@handle_errors
def standards_set_item_tolerance(ctx: click.Context, name: str, item_name: str, tolerance_abs: float,
                                 tolerance_ratio: float):
    """Override the tolerance of ITEM_NAME in standard NAME."""
    standard = _store(ctx).set_item_tolerance(name, item_name, tolerance_abs, tolerance_ratio)
    override = standard.find_override(item_name)
    click.echo(f"{standard.name}: {override.item_name} abs={override.tolerance_abs:g} "
               f"ratio={override.tolerance_ratio:g}")


@standards.command('remove-item-tolerance')
@click.argument('name')
@click.argument('item_name')
@click.pass_context
@handle_errors
def standards_remove_item_tolerance(ctx: click.Context, name: str, item_name: str):
    """Remove the tolerance override of ITEM_NAME from standard NAME."""
    standard = _store(ctx).remove_item_tolerance(name, item_name)
    click.echo(f"{standard.name}: {len(standard.item_tolerances)} item overrides")


if __name__ == '__main__':
    cli()
