from torch import nn


CONVS = {2: (nn.Conv2d, nn.ConvTranspose2d), 3: (nn.Conv3d, nn.ConvTranspose3d)}


class ResidualBlock(nn.Sequential):
    """Convolutional network predicting the log-scale and shift of a coupling layer
    from its conditioning input. Maps n_in channels to 2 * n_in channels: the first
    n_in are the log-scale, the rest the shift.

    conv(k1, s1, p1) -> ReLU -> conv(k2, s2, p2) -> ReLU -> transposed conv(k1, s1, p1)
    """

    def __init__(
        self,
        n_in: int,
        n_hidden: int,
        ndim: int = 2,
        k1: int = 3,
        k2: int = 1,
        p1: int = 1,
        p2: int = 0,
        s1: int = 1,
        s2: int = 1,
    ) -> None:
        """Args:
        n_in (int): number of input channels
        n_hidden (int): number of hidden channels
        ndim (int, optional): number of spatial dims, 2 for images, 3 for volumes.
        k1, k2 (int, optional): kernel size of the first and third conv (k1) and
            of the second conv (k2).
        p1, p2 (int, optional): paddings of the same convs.
        s1, s2 (int, optional): strides of the same convs.
        """
        if ndim not in CONVS:
            raise ValueError(f"ndim must be one of {list(CONVS)}, got {ndim}")
        Conv, ConvTranspose = CONVS[ndim]
        layers = [
            Conv(n_in, n_hidden, k1, stride=s1, padding=p1),
            nn.ReLU(),
            Conv(n_hidden, n_hidden, k2, stride=s2, padding=p2),
            nn.ReLU(),
            ConvTranspose(n_hidden, 2 * n_in, k1, stride=s1, padding=p1),
        ]
        super().__init__(*layers)
