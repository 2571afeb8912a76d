"""Data generation, model fitting and coefficient extraction modules."""

from . import correlation as correlation
from . import design as design
from . import distributions as distributions
from . import extraction as extraction
from . import fitting as fitting
from . import response as response
from . import variables as variables
