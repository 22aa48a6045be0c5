import numpy as np
import pytest
import torch

from torch_hint import ShapeError
from torch_hint.flows import CouplingLayerHINT, Permute, get_depth
from torch_hint.utils import grad_log_likelihood, log_likelihood, rel_error


torch.manual_seed(0)  # ensure reproducible results

nx, ny, n_in, n_hidden, batch_size = 16, 16, 8, 16, 2

configs = [
    (permute, logdet) for permute in ["none", "lower", "full"] for logdet in [True, False]
]


def hint_loss(H, x):
    """Negative log-likelihood of H(x) under a standard normal and its gradient
    w.r.t. x, computed with H.backward().
    """
    H.clear_grad()
    with torch.no_grad():
        y, logdet = H(x)
    f = -log_likelihood(y)
    if logdet is not None:
        f = f - logdet
    dx, _ = H.backward(-grad_log_likelihood(y), y)
    return f.item(), dx


def convergence_order(errors, h0, maxiter):
    """Slope of log(error) over log(h) for step sizes h0, h0 / 2, ..."""
    hs = h0 / 2 ** np.arange(maxiter)
    return np.polyfit(np.log(hs), np.log(errors), 1)[0]


def test_get_depth():
    assert [get_depth(n) for n in [1, 2, 4, 5, 8, 16, 32, 64]] == [1, 1, 1, 2, 2, 3, 4, 5]


def test_coupling_blocks():
    H = CouplingLayerHINT(n_in, n_hidden)
    assert H.depth == get_depth(n_in) == 2
    assert len(H.CL) == 2
    assert [cl.n_in for cl in H.CL] == [4, 2]
    assert H.C is None

    x = torch.randn(batch_size, n_in, nx, ny)
    y, logdet = H(x)
    assert y.shape == x.shape
    assert logdet is None


def test_permutation_widths():
    assert CouplingLayerHINT(n_in, n_hidden, permute="full").C.k == n_in
    assert CouplingLayerHINT(n_in, n_hidden, permute="lower").C.k == n_in // 2
    assert CouplingLayerHINT(n_in, n_hidden, permute=Permute.LOWER).permute is Permute.LOWER


def test_invalid_construction():
    with pytest.raises(ShapeError, match="divisible"):
        CouplingLayerHINT(12, n_hidden)
    with pytest.raises(ValueError):
        CouplingLayerHINT(n_in, n_hidden, permute="sideways")


def test_wrong_input_shape():
    H = CouplingLayerHINT(n_in, n_hidden)
    with pytest.raises(ShapeError):
        H(torch.randn(batch_size, 2 * n_in, nx, ny))
    with pytest.raises(ShapeError):
        H.inverse(torch.randn(batch_size, n_in // 2, nx, ny))
    with pytest.raises(ShapeError):
        H(torch.randn(n_in, nx, ny))


@pytest.mark.parametrize("permute, logdet", configs)
def test_hint_invertibility(permute, logdet):
    H = CouplingLayerHINT(n_in, n_hidden, logdet=logdet, permute=permute)
    x = torch.randn(batch_size, n_in, nx, ny)

    with torch.no_grad():
        y, ld = H(x)
        x_ = H.inverse(y)
    assert (ld is not None) == logdet
    assert rel_error(x, x_) < 1e-5

    # backward reconstructs the same input as inverse
    dy = torch.randn_like(y)
    dx, x_back = H.backward(dy, y)
    assert dx.shape == x.shape
    assert rel_error(x, x_back) < 1e-5
    assert torch.allclose(x_back, x_, atol=1e-5)

    # single tuple argument
    _, x_tuple = H.backward((dy, y))
    assert torch.allclose(x_tuple, x_back)


@pytest.mark.parametrize("n_channels", [2, 4, 16, 32])
def test_hint_invertibility_depths(n_channels):
    H = CouplingLayerHINT(n_channels, n_hidden, logdet=True, permute="full")
    assert len(H.CL) == get_depth(n_channels)
    x = torch.randn(batch_size, n_channels, 8, 8)
    with torch.no_grad():
        y, _ = H(x)
        assert rel_error(x, H.inverse(y)) < 1e-5


def test_hint_invertibility_5d():
    H = CouplingLayerHINT(n_in, 8, ndim=3, logdet=True, permute="lower")
    x = torch.randn(batch_size, n_in, 4, 4, 4)
    with torch.no_grad():
        y, logdet = H(x)
        assert rel_error(x, H.inverse(y)) < 1e-5
    _, x_ = H.backward(torch.randn_like(y), y)
    assert rel_error(x, x_) < 1e-5


@pytest.mark.parametrize("permute, logdet", configs)
def test_hint_backward_matches_autograd(permute, logdet):
    H = CouplingLayerHINT(n_in, n_hidden, logdet=logdet, permute=permute).double()
    x = torch.randn(batch_size, n_in, 8, 8, dtype=torch.float64, requires_grad=True)

    y, ld = H(x)
    f = -log_likelihood(y)
    if logdet:
        f = f - ld
    f.backward()
    autograd_grads = [p.grad.clone() for p in H.get_params()]

    _, dx = hint_loss(H, x.detach())
    assert torch.allclose(dx, x.grad, rtol=1e-6, atol=1e-10)
    for param, grad in zip(H.get_params(), autograd_grads):
        assert torch.allclose(param.grad, grad, rtol=1e-6, atol=1e-10)


def test_hint_logdet_matches_jacobian():
    H = CouplingLayerHINT(n_in, 4, logdet=True, permute="full").double()
    x = torch.randn(1, n_in, 2, 2, dtype=torch.float64)

    J = torch.autograd.functional.jacobian(lambda x: H(x).output, x)
    J = J.reshape(x.numel(), x.numel())
    _, logdet = H(x)
    assert torch.allclose(logdet, torch.linalg.slogdet(J).logabsdet)


@pytest.mark.parametrize("permute, logdet", configs)
def test_hint_grad_input(permute, logdet):
    H = CouplingLayerHINT(n_in, n_hidden, logdet=logdet, permute=permute).double()
    x0 = torch.randn(batch_size, n_in, 8, 8, dtype=torch.float64)
    dx = torch.randn_like(x0)

    f0, gx = hint_loss(H, x0)

    maxiter, h0 = 5, 0.1
    err1, err2 = np.zeros(maxiter), np.zeros(maxiter)
    h = h0
    for j in range(maxiter):
        f = hint_loss(H, x0 + h * dx)[0]
        err1[j] = abs(f - f0)
        err2[j] = abs(f - f0 - h * (dx * gx).sum().item())
        h /= 2

    # err1 may stall while the second order term dominates, err2 must not
    assert abs(err1[-1] / (err1[0] / 2 ** (maxiter - 1)) - 1) < 10
    assert abs(err2[-1] / (err2[0] / 4 ** (maxiter - 1)) - 1) < 10
    assert convergence_order(err2, h0, maxiter) > 1.6


@pytest.mark.parametrize("permute, logdet", [("none", True), ("full", False)])
def test_hint_grad_weights(permute, logdet):
    H = CouplingLayerHINT(n_in, n_hidden, logdet=logdet, permute=permute).double()
    W = H.CL[0].RB[0].weight
    W0 = W.detach().clone()
    dW = torch.randn_like(W0)
    x = torch.randn(batch_size, n_in, 8, 8, dtype=torch.float64)

    f0, _ = hint_loss(H, x)
    gW = W.grad.clone()

    maxiter, h0 = 5, 0.1
    err3, err4 = np.zeros(maxiter), np.zeros(maxiter)
    h = h0
    for j in range(maxiter):
        with torch.no_grad():
            W.copy_(W0 + h * dW)
        f = hint_loss(H, x)[0]
        err3[j] = abs(f - f0)
        err4[j] = abs(f - f0 - h * (gW * dW).sum().item())
        h /= 2

    assert abs(err3[-1] / (err3[0] / 2 ** (maxiter - 1)) - 1) < 10
    assert convergence_order(err4, h0, maxiter) > 1.6


def test_get_params_order():
    H = CouplingLayerHINT(16, n_hidden, permute="lower")
    params = H.get_params()
    expected = [p for cl in H.CL for p in cl.parameters()] + [H.C.v1, H.C.v2, H.C.v3]
    assert len(params) == len(expected) == len(list(H.parameters()))
    assert all(p is q for p, q in zip(params, expected))


def test_clear_grad():
    H = CouplingLayerHINT(n_in, n_hidden, permute="full")
    x = torch.randn(batch_size, n_in, 8, 8)
    with torch.no_grad():
        y, _ = H(x)
    H.backward(torch.randn_like(y), y)
    assert all(p.grad is not None for p in H.get_params())

    H.clear_grad()
    assert all(p.grad is None for p in H.get_params())
