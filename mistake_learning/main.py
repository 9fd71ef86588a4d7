import typer

from mistake_learning.commands.engine_commands import engine_app
from mistake_learning.commands.learning_commands import learn_app

app = typer.Typer(help="Learn from development mistakes and prevent their recurrence.")
app.add_typer(engine_app, name="engine")
app.add_typer(learn_app, name="learn")


def main():
    app()


if __name__ == "__main__":
    main()
