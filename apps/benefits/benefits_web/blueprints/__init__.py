"""HTTP blueprints for the Benefits web app."""
