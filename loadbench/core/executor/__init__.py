"""
Mixins composing the StageExecutor: virtual-user loops and the stage
control loop.
"""
