"""
Module that contains the command line app.

Why does this file exist, and why not put this in __main__?

  You might be tempted to import things from __main__ later, but that will cause
  problems: the code will get executed twice:

  - When you run `python -mlaser_contacts` python will execute
    ``__main__.py`` as a script. That means there will not be any
    ``laser_contacts.__main__`` in ``sys.modules``.
  - When you import __main__ it will get executed again (as a module) because
    there's no ``laser_contacts.__main__`` in ``sys.modules``.

  Also see (1) from https://click.palletsprojects.com/en/stable/setuptools/
"""

import click

from laser_contacts.model import Model
from laser_contacts.params import load_parameters


@click.command()
@click.option("--params", "params_file", type=click.Path(exists=True, dir_okay=False), default=None, help="JSON parameter file.")
@click.option("--nticks", type=int, default=None, help="Number of ticks to run.")
@click.option("--seed", type=int, default=None, help="PRNG seed.")
@click.option("--workerflow", type=click.Path(exists=True, dir_okay=False), default=None, help="Binary worker-flow file.")
@click.option("--concurrent/--sequential", default=None, help="Run the interaction contexts side by side.")
@click.option("--verbose/--quiet", default=True, help="Print progress and per-tick totals.")
def main(params_file, nticks, seed, workerflow, concurrent, verbose):
    """Run the contact-interaction model on a demo population."""

    try:
        params = load_parameters(
            params_file,
            {"nticks": nticks, "seed": seed, "workerflow": workerflow, "concurrent": concurrent, "verbose": verbose},
        )
    except ValueError as ex:
        raise click.BadParameter(str(ex)) from ex

    model = Model(params)
    model.run()

    if not verbose and len(model.expected):
        for d, disease in enumerate(params.diseases):
            click.echo(f"{disease.get('name', d)}: expected new infections on final tick = {model.expected[-1, d]:.3f}")

    return
