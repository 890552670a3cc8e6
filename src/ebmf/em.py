"""Generic routines for EM, SQUAREM

Both routines iterate a monotone update (e.g., EM for mixture weights, or
alternating closed-form maximization) until the objective stops improving.

"""

import numpy as np

def em(init, objective_fn, update_fn, max_iters, tol, *args, **kwargs):
  """Return the fixed point of update_fn and its objective value

  init - array-like
  objective_fn - function (theta, *args, **kwargs) -> scalar (to maximize)
  update_fn - function (theta, *args, **kwargs) -> theta
  max_iters - maximum number of updates
  tol - threshold for change in objective (convergence criterion)

  """
  theta = np.array(init, dtype=float)
  obj = objective_fn(theta, *args, **kwargs)
  for i in range(max_iters):
    update_theta = update_fn(theta, *args, **kwargs)
    update = objective_fn(update_theta, *args, **kwargs)
    diff = update - obj
    if not np.isfinite(update):
      raise RuntimeError('Non-finite objective')
    elif diff < -tol:
      raise RuntimeError(f'objective decreased ({diff:.4g})')
    elif diff < tol:
      # Important: keep the better of the two, since decreases within tol are
      # numerical error
      if diff < 0:
        return theta, obj
      return update_theta, update
    else:
      theta, obj = update_theta, update
  else:
    raise RuntimeError(f'failed to converge in max_iters ({diff:.4g} > {tol:.4g})')

def squarem(init, objective_fn, update_fn, max_iters, tol, par_tol=1e-8, max_step_updates=10, *args, **kwargs):
  """Squared extrapolation scheme for accelerated EM

  Reference: 

    Varadhan, R. and Roland, C. (2008), Simple and Globally Convergent Methods
    for Accelerating the Convergence of Any EM Algorithm. Scandinavian Journal
    of Statistics, 35: 335-353. doi:10.1111/j.1467-9469.2007.00585.x

  objective_fn should return -inf outside the feasible set, so that
  extrapolated candidates leaving it are rejected.

  """
  theta = np.array(init, dtype=float)
  obj = objective_fn(theta, *args, **kwargs)
  for i in range(max_iters):
    x1 = update_fn(theta, *args, **kwargs)
    r = x1 - theta
    x2 = update_fn(x1, *args, **kwargs)
    v = (x2 - x1) - r
    if np.linalg.norm(v) < par_tol:
      return x2, objective_fn(x2, *args, **kwargs)
    step = -np.sqrt(r @ r) / np.sqrt(v @ v)
    if step > -1:
      # Step length = -1 is two EM updates
      candidate = x2
      update = objective_fn(candidate, *args, **kwargs)
    else:
      # Use as large a step length as is feasible to maintain monotonicity
      for j in range(max_step_updates):
        candidate = theta - 2 * step * r + step * step * v
        update = objective_fn(candidate, *args, **kwargs)
        if np.isfinite(update) and update > obj:
          break
        else:
          step = (step - 1) / 2
      else:
        candidate = x2
        update = objective_fn(candidate, *args, **kwargs)
    diff = update - obj
    if not np.isfinite(update):
      raise RuntimeError('Non-finite objective')
    elif diff < -tol:
      raise RuntimeError(f'objective decreased ({diff:.4g})')
    elif diff < tol:
      if diff < 0:
        return theta, obj
      return candidate, update
    else:
      theta, obj = candidate, update
  else:
    raise RuntimeError(f'failed to converge in max_iters ({diff:.3g} > {tol:.3g})')
