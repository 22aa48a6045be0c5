from .conditional_hint_network import NetworkConditionalHINT
