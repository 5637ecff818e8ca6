"""Authority, store, policy and support utilities"""
