"""Allow ``python -m heyos_builder`` (used when the build relaunches itself)."""

from heyos_builder.cli import app

if __name__ == "__main__":
    app(prog_name="heyos-build")
