"""
Тестовые двойники движка бронирований: хранилище в памяти, провайдер и часы.
"""
