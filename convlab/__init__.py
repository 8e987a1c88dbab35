"""
convlab: feed-forward convolutional networks trained with minibatch SGD,
written from scratch on NumPy.
"""
__version__ = '0.1.0'
