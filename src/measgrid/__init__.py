"""measgrid -- measurement grid with formula columns and worst-case uncertainty propagation."""

__version__ = "0.1.0"
