from setuptools import find_packages, setup


setup(
    name="Torch-HINT",
    version="0.1.0",
    packages=find_packages(include=["torch_hint*"]),
    description="PyTorch implementation of recursive HINT coupling layers for "
    "invertible neural networks",
    python_requires=">=3.8",
    install_requires=[
        "numpy",
        "PyWavelets",
        "torch",
    ],
    extras_require={"test": ["pytest", "pytest-cov"]},
)
