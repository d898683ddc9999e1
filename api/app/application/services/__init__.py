"""
Servicios de aplicacion.

Contiene la logica del pipeline de sincronizacion que no pertenece
a un caso de uso especifico: motor de mapeo, reconciliacion de schema,
procesador de la cola, motor de jobs y diagnostico de mapeos.
"""
