"""Exceptions raised while fitting EBMF

InvalidInput is raised before anything is mutated. NumericDegeneracy aborts
the current update; the greedy and backfit loops turn it into a
NumericDegeneracyWarning and return the last valid state.

"""

class InvalidInput(ValueError):
  """Malformed data, standard errors, or initialization"""
  pass

class NumericDegeneracy(RuntimeError):
  """Non-finite objective or EBNM log likelihood"""
  pass

class NumericDegeneracyWarning(RuntimeWarning):
  pass
