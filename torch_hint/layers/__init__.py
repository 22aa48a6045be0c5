from .residual_block import ResidualBlock
