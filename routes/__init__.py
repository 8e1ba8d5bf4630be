from .migrations import migrations_bp


def register_blueprints(app):
    app.register_blueprint(migrations_bp)
