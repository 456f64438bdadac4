"""REST blueprints for matches, frames and events."""
