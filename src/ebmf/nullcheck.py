"""Remove components which do not increase the ELBO

Removing component k is equivalent to fixing g_lk, g_fk to point masses on
zero, which makes q(l_k), q(f_k) point masses on zero and -KL(q || g) = 0.

"""
import warnings

from ebmf.errors import NumericDegeneracy, NumericDegeneracyWarning

def nullcheck(state, tol=0, verbose=False):
  """Return a new state without components whose removal does not decrease
the ELBO

  Components with fixed loadings or factors are never removed. A component
  whose removal is numerically degenerate is kept, with a warning. The indices
  of removed components (before removal) are recorded in state.removed.

  tol - remove a component if the ELBO without it is >= ELBO - tol

  """
  state = state.copy()
  removed = []
  for k in reversed(range(state.k)):
    if state.fix_l[k] or state.fix_f[k]:
      continue
    null = state.copy()
    try:
      null.remove(k)
    except NumericDegeneracy as e:
      warnings.warn(f'nullcheck kept component {k}: {e}', NumericDegeneracyWarning)
      continue
    diff = null.elbo - state.elbo
    if diff >= -tol:
      if verbose:
        print(f'nullcheck [{k}]: removed ({diff:.4g})')
      state = null
      removed.append(k)
    elif verbose:
      print(f'nullcheck [{k}]: kept ({diff:.4g})')
  state.removed = sorted(removed)
  return state
