import sys
from pathlib import Path

import typer
from typing_extensions import Annotated

from dotenv import load_dotenv, find_dotenv

load_dotenv(find_dotenv())

app = typer.Typer(
    help="kmongo: Kubernetes operator for MongoDB replica sets",
    add_completion=False,
)


@app.command("operator")
def run_operator():
    """Run the Kubernetes operator (connects to cluster)."""
    from kmongo.main import main

    main()


@app.command("generate-crds")
def generate_crds(
    output: Annotated[
        str, typer.Option("-o", "--output", help="Output directory")
    ] = "crds/generated",
    force: Annotated[bool, typer.Option("--force", help="Force regeneration")] = False,
    validate: Annotated[
        bool, typer.Option("--validate", help="Validate generated CRDs")
    ] = False,
):
    """Generate CRD YAML files from pydantic models."""
    from kmongo.crd.generator import CRDManager

    try:
        output_dir = Path(output)
        manager = CRDManager(output_dir=output_dir)

        if manager.generate_all_crds(force=force):
            typer.echo(f"CRDs generated successfully in {output_dir}")

            if validate:
                if manager.validate_generated_crds():
                    typer.echo("CRD validation passed")
                else:
                    typer.echo("CRD validation failed")
                    sys.exit(1)
        else:
            typer.echo("No CRDs generated (models unchanged)")

    except Exception as e:
        typer.echo(f"Failed to generate CRDs: {e}")
        sys.exit(1)


@app.command("validate-models")
def validate_models():
    """Validate CRD models without generating files."""
    from kmongo.crd.generator import CRDManager

    try:
        manager = CRDManager()
        crds = manager.get_crds_as_dict()
        models = manager.registry.get_all_models()

        typer.echo(f"Validated {len(models)} CRD models")
        for key in models.keys():
            typer.echo(f"  - {key}")
        typer.echo(f"Generated {len(crds)} CRDs in memory")

    except Exception as e:
        typer.echo(f"Model validation failed: {e}")
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
