"""Patient, donor, policy and result models"""
